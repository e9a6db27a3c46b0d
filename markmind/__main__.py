"""
Entry point for python -m markmind
"""
from markmind.cli import main

if __name__ == '__main__':
    main()
