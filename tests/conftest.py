import os
import pty

import pytest


@pytest.fixture
def pty_pair():
    """A pseudo-terminal: (master_fd, slave_fd). The slave acts as stdin."""
    master, slave = pty.openpty()
    yield master, slave
    os.close(slave)
    os.close(master)
