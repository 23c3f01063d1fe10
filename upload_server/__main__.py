from upload_server.main import main

main()
