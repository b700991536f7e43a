"""Load Amazon Machine Images onto block devices of the current EC2 host."""

__version__ = '0.1.0'
