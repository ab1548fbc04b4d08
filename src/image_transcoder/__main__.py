from image_transcoder.cli_entry import main

if __name__ == "__main__":
    main()
