import sys

from mailpail.cli import main

sys.exit(main())
