from muterbot.bot import main


main()
