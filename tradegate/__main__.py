from tradegate.cli import main

raise SystemExit(main())
