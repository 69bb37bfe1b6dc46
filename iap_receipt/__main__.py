import sys

from iap_receipt.cli import main

sys.exit(main())
