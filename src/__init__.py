"""
Taxonomy Opportunity Engine

Bulk analytics for catalog taxonomies that:
1. Scores every node's optimization opportunity (0-100)
2. Projects revenue lift at a target search position
3. Runs both across thousands of nodes as concurrent batch jobs
4. Persists ranked opportunities for the dashboard
"""

__version__ = "0.1.0"
