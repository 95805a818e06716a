from securerelay.web.app import main

main()
