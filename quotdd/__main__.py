import sys

from quotdd.main import main

sys.exit(main())
