import sys

from exprqc.cli import main

sys.exit(main())
