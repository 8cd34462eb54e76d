class FormattedOutput:
    "A text stream wrapper which keeps track of the current output column."

    def __init__(self, outfile):
        self.outfile = outfile
        self.column = 0

    def write(self, text):
        if not text:
            return
        self.outfile.write(text)
        col = self.column
        for c in text:
            if c == '\n' or c == '\r':
                col = 0
            elif c == '\t':
                col += 8 - (col % 8)
            else:
                col += 1
        self.column = col

    def indent(self, count):
        if count > 0:
            self.write(' ' * count)

    def pad_to_column(self, column):
        "Move to 'column', always writing at least one space."
        self.indent(max(column - self.column, 1))

    def flush(self):
        self.outfile.flush()
