"""vboxlab: lifecycle orchestration for VirtualBox machines cloned from seeds."""

__version__ = '0.1.0'

__all__ = [
    'cli',
    'config',
    'connection',
    'errors',
    'locks',
    'lookup',
    'net',
    'results',
    'runtime',
    'service',
    'session',
    'status',
    'tasks',
    'util',
    'vm',
]
