"""
Scheduling Domain

Appointment booking, agent availability and calendar analytics.

Structure:
```
crm_calendar/domain/scheduling/
├── schemas.py              # Request / response models
├── errors.py               # Typed scheduling outcomes
├── repository.py           # Appointment, availability and hold queries
├── time_calculator.py      # Time parsing and interval arithmetic
├── availability_service.py # Recurring windows, exceptions, blocks
├── slot_service.py         # Bookable slot generation
├── conflict_service.py     # Double-booking detection and suggestions
├── locks.py                # Per-agent write serialization
├── appointment_service.py  # Appointment store and status machine
├── smart_scheduler.py      # Slot scoring and automated booking
├── analytics_service.py    # Summaries, trends, daily agenda
└── router.py               # /calendar endpoints
```
"""
