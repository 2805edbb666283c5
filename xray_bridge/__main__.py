import sys

from xray_bridge.main import main

sys.exit(main())
