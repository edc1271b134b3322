import sys

from entitymigrate.cli import main

sys.exit(main())
