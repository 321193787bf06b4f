"""
Certificates app

Responsible for:
- Issuing completion certificates for trainings
- Public validation by verification code
- PDF rendering with a Code128 barcode of the verification code
"""
