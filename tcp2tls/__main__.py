import sys

from tcp2tls.main import main

sys.exit(main())
