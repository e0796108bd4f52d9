from live_transcriber.main import main

raise SystemExit(main())
