import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeJob:
    def __init__(self, scheduler, due, callback, interval=None):
        self.scheduler = scheduler
        self.due = due
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: jobs only run when advance() moves time past them."""

    def __init__(self):
        self.now = 0
        self.jobs = []

    def clock(self):
        return self.now

    def call_every(self, interval_ms, callback):
        job = FakeJob(self, self.now + interval_ms, callback, interval_ms)
        self.jobs.append(job)
        return job

    def call_later(self, delay_ms, callback):
        job = FakeJob(self, self.now + delay_ms, callback)
        self.jobs.append(job)
        return job

    @property
    def pending(self):
        return [job for job in self.jobs if not job.cancelled]

    def advance(self, ms):
        target = self.now + ms
        while True:
            due = [job for job in self.pending if job.due <= target]
            if not due:
                break
            job = min(due, key=lambda j: j.due)
            self.now = job.due
            if job.interval:
                job.due += job.interval
            else:
                job.cancelled = True
            job.callback()
        self.now = target


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sample_deals():
    return [
        {
            "_id": "a",
            "title": "Beach Resort Weekend",
            "businessName": "Sunset Stays",
            "businessType": "hotel",
            "description": "Two nights by the sea",
            "discount": "35% OFF",
            "views": 100,
            "claims": 5,
            "createdAt": "2024-01-10T00:00:00Z",
            "validUntil": "2024-03-01T00:00:00Z",
            "location": {"lat": 6.0535, "lng": 80.2210},
        },
        {
            "_id": "b",
            "title": "Sushi Night",
            "businessName": "Tokyo Corner",
            "businessType": "restaurant",
            "description": "All you can eat",
            "discount": "UP TO 50% OFF",
            "views": 50,
            "claims": 30,
            "createdAt": "2024-02-01T00:00:00Z",
            "validUntil": "2024-02-10T00:00:00Z",
            "location": {"lat": 6.9271, "lng": 79.8612},
        },
        {
            "_id": "c",
            "title": "Dive Trip",
            "businessName": "Blue Reef",
            "category": "activity",
            "businessType": "tour",
            "description": "Reef diving with a beach lunch",
            "discount": {"type": "fixed", "value": 20, "label": "LKR 2000 OFF"},
            "views": 10,
            "claims": 0,
            "createdAt": "2023-12-25T00:00:00Z",
            "location": {"lat": 7.2906, "lng": 80.6337},
        },
    ]
