from spintech.main import main

raise SystemExit(main())
