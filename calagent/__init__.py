"""
Natural-language routing for calendar events and todo-list tasks
"""
