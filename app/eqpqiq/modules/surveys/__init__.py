"""
Survey campaigns.

- Program leadership creates a survey, distributes it to respondents and sends reminders
- Respondents open the survey through an unguessable token link (no account needed)
- Respondent status only moves forward: pending -> started -> completed
- Educator surveys pair each faculty respondent with the residents of a class
"""
