import sys

from callthrottle.main import main

sys.exit(main())
