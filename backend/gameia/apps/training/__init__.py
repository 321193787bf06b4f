"""
Training app

Responsible for:
- The training catalog (organization and global trainings) and their modules
- The module player: start / complete / time tracking / module locking
- Assignments with deadlines
- Practical routine applications and the manager review of them
"""
