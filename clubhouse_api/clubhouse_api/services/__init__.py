"""Domain services behind the Clubhouse API routers."""
