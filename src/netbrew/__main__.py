import sys

from netbrew.cli.main import main

sys.exit(main())
