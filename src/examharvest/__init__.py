"""
ExamHarvest - Exam question harvester and job orchestrator.

Drives authenticated browser sessions through a student portal, extracts
exam questions and their answer keys, and stores them. Serves both live
streaming clients and a durable background job queue.
"""

__version__ = "0.1.0"
__app_name__ = "examharvest"
