"""Library App - Services Package

One service per entity. Each public method runs in its own transaction
(``database.transaction``) and enforces the business rules for that entity:
- Book catalog and copy accounting (book_service)
- Categories (category_service)
- Members (member_service)
- Users and credentials (user_service)
- Loan workflow: borrow, return and ledger queries (loan_service)
"""
