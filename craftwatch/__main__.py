"""
使用方式:
    python -m craftwatch
    或
    craftwatch
"""

from craftwatch.main import cli


if __name__ == "__main__":
    cli()
