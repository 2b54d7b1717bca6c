from balena_logs.cli import main

raise SystemExit(main())
