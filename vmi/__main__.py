import sys

from vmi.cli import main

sys.exit(main())
