# Services package init
"""
CivicForm Middleware - Services Layer
=======================================

Business logic between the routes (HTTP) and the database. Every service
receives the request's AsyncSession. Write operations commit before they
return and wrap a failed commit in DatabaseError (500). The session
dependency only rolls back and closes.

Service Inventory:
    - StructureService:   structure cache (save / get)
    - SubmissionService:  submission queue (enqueue, drain_pending,
                          set_status, filtered_list, stats)
    - AppSettingService:  typed runtime settings
    - ErrorLogService / UsageService: persisted error and traffic logs
"""
