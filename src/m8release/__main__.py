from m8release.cli import main

raise SystemExit(main())
