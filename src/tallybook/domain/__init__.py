"""Domain layer for tallybook.

Services are imported from their own modules (``tallybook.domain.account``,
``tallybook.domain.transaction`` and so on) so that the database layer can
import ``tallybook.domain.entities`` without pulling the services in.
"""
