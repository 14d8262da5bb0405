# Company OS: Kanban board core with a Telegram front end
#
#   board/   - board core (columns, tasks, projection, drag)
#   config.py - YAML config + backend factory
#   bot.py    - Telegram bot

__version__ = "0.1.0"
