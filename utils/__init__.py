# Utils package - configuration, logging and background maintenance helpers
