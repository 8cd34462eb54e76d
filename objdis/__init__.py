VERSION_STRING = '0.8'
