from altsignal.main import main

main()
