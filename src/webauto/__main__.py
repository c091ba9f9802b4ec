import sys

from webauto.cli import main

sys.exit(main())
