"""
FocusBot — run with `python main.py`.

Equivalent to the `focusbot` console script.
"""

from focusbot.bot.telegram_bot import main

if __name__ == "__main__":
    main()
