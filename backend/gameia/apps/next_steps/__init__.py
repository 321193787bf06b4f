"""
Next steps app

Aggregates what the learner should do next (practical applications,
suggested PDI actions, assigned trainings with deadlines, personal
commitments) into one prioritised list.
"""
