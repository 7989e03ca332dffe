from kasten_backup_restore.cli import main

raise SystemExit(main())
