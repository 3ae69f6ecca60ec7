from pfztp.cli import main

raise SystemExit(main())
