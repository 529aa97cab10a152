"""Run the cuckoo command line tool with `python -m cuckoo`."""

from cuckoo.tool.cuckoo import main

if __name__ == "__main__":
    main()
