import sys

from certinator.main import main

sys.exit(main())
