"""Allow ``python -m vboxtop``."""

from vboxtop.app import main

raise SystemExit(main())
