"""Allow ``python -m surreal_backup``"""

from .cli import main

main()
