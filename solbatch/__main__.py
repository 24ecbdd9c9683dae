from solbatch.cli import main

raise SystemExit(main())
