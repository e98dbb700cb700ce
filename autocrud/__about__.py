__version__ = "0.4.2"
__description__ = "autocrud : declarative entities to Flask-Restful CRUD endpoints"
