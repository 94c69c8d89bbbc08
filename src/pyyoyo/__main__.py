import sys

from pyyoyo.cli import main

sys.exit(main())
