"""
Interview-day assessment.

Sessions hold candidates; every interviewer scores each candidate on EQ/PQ/IQ
(0-100). Review views normalize scores per interviewer to even out harsh and
generous raters.
"""
