import sys

from tradeguard.cli import main

sys.exit(main())
